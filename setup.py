from setuptools import setup, find_packages

setup(
    name="hcal_match",
    version="0.1.0",
    description="Match HCAL hits to simulated scoring-plane particles and summarise runs",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(include=["hcal_match", "hcal_match.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "pandas",
        "matplotlib>=3.4",
        "orjson",
    ],
    extras_require={
        # Parquet input tables
        "parquet": [
            "pyarrow",
        ],
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            # CLI entry point for running main.py
            "hcal-match=hcal_match.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
