"""Command-line interface for torch-chaincrf.

Data files use the block format read by :mod:`torch_chaincrf.data`: one
``LABEL feature[:value] ...`` line per position, sequences separated by blank
lines.

Usage:
    chaincrf train train.txt --model tagger.pt                  # L2, order 1
    chaincrf train train.txt --model tagger.pt --mode l1 --order 2
    chaincrf train train.txt --model tagger.pt --mode entropy --unlabeled raw.txt
    chaincrf predict tagger.pt test.txt                          # one label per line
    chaincrf predict tagger.pt test.txt --score                  # plus log p(gold)
    chaincrf weights tagger.pt --label B                         # feature<TAB>weight
"""

import argparse
import logging
import sys

from .constants import DEFAULT_ITERATIONS, DEFAULT_LABEL
from .data import read_instances
from .errors import ChainCRFError
from .tagger import SequenceTagger

logger = logging.getLogger(__name__)


def cmd_train(args) -> int:
    blocks = read_instances(args.data)
    labeled = [(positions, labels) for positions, labels in blocks if labels is not None]
    unlabeled = [positions for positions, labels in blocks if labels is None]
    if args.unlabeled is not None:
        unlabeled += [positions for positions, _ in read_instances(args.unlabeled)]

    tagger = SequenceTagger(
        order=args.order,
        default_label=args.default_label,
        fully_connected=args.fully_connected,
    )
    tagger.configure(
        args.mode,
        variance=args.sigma**2,
        iteration_budget=args.iterations,
        l1_weight=args.l1_weight,
        entropy_weight=args.entropy_weight,
        num_workers=args.workers,
    )

    try:
        converged = tagger.train(labeled, unlabeled)
    except KeyboardInterrupt:
        # the trainer restores the best parameters before the interrupt propagates
        logger.warning("Interrupted; keeping the best parameters found so far")
        converged = False
    tagger.save_model(args.model)
    if not converged:
        logger.warning(f"Training did not converge within {tagger.training_iterations} iterations")
    return 0


def cmd_predict(args) -> int:
    tagger = SequenceTagger.load_model(args.model, order=args.order)
    out = sys.stdout
    for i, (positions, labels) in enumerate(read_instances(args.data)):
        if i:
            out.write("\n")
        if args.score and labels is not None:
            out.write(f"# log_probability={tagger.log_probability(labels, positions):.6f}\n")
        for label in tagger.predict(positions):
            out.write(f"{label}\n")
    return 0


def cmd_weights(args) -> int:
    tagger = SequenceTagger.load_model(args.model)
    names = tagger.feature_names(args.label)
    weights = tagger.feature_weights(args.label)
    for name, weight in zip(names, weights):
        if args.nonzero and weight == 0.0:
            continue
        sys.stdout.write(f"{name}\t{weight:.6g}\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaincrf",
        description="Linear-chain CRF sequence tagger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every iteration")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Train command
    train_parser = subparsers.add_parser("train", help="Train a model")
    train_parser.add_argument("data", help="Training data (labeled, optionally unlabeled blocks)")
    train_parser.add_argument("--model", required=True, help="Output model file")
    train_parser.add_argument("--order", type=int, default=1, help="Markov order (default: 1)")
    train_parser.add_argument(
        "--mode",
        default="l2",
        help="Regularization: l2, l1 or entropy (default: l2)",
    )
    train_parser.add_argument(
        "--sigma", type=float, default=10.0, help="Gaussian prior std; variance is sigma^2"
    )
    train_parser.add_argument(
        "--iterations", type=int, default=DEFAULT_ITERATIONS, help="Iteration budget"
    )
    train_parser.add_argument("--l1-weight", type=float, default=1.0, help="L1 strength")
    train_parser.add_argument(
        "--entropy-weight", type=float, default=0.5, help="Unlabeled entropy weight"
    )
    train_parser.add_argument("--unlabeled", default=None, help="Extra unlabeled data file")
    train_parser.add_argument("--workers", type=int, default=1, help="Worker threads")
    train_parser.add_argument("--default-label", default=DEFAULT_LABEL, help="Start label")
    train_parser.add_argument(
        "--fully-connected",
        action="store_true",
        help="Create every transition between observed labels",
    )

    # Predict command
    predict_parser = subparsers.add_parser("predict", help="Label sequences")
    predict_parser.add_argument("model", help="Model file")
    predict_parser.add_argument("data", help="Data file; labels, if present, are ignored")
    predict_parser.add_argument(
        "--order", type=int, default=None, help="Require this Markov order"
    )
    predict_parser.add_argument(
        "--score", action="store_true", help="Also print log p(labels | input) for labeled blocks"
    )

    # Weights command
    weights_parser = subparsers.add_parser("weights", help="Dump feature weights")
    weights_parser.add_argument("model", help="Model file")
    weights_parser.add_argument("--label", default=None, help="Only this label's weights")
    weights_parser.add_argument("--nonzero", action="store_true", help="Skip zero weights")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    commands = {"train": cmd_train, "predict": cmd_predict, "weights": cmd_weights}
    try:
        return commands[args.command](args)
    except (ChainCRFError, ValueError, OSError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
