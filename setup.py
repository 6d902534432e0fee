"""
Setup script for torch-chaincrf.

Pure PyTorch; no extensions are compiled. Install for development with:
    pip install -e ".[test]"
"""

from setuptools import find_packages, setup


def main():
    setup(
        name="torch-chaincrf",
        version="0.1.0",
        description="Order-N linear-chain conditional random fields over sparse features",
        python_requires=">=3.9",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=["torch>=2.1"],
        extras_require={"test": ["pytest>=7"]},
        entry_points={"console_scripts": ["chaincrf=torch_chaincrf.cli:main"]},
    )


if __name__ == "__main__":
    main()
