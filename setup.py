"""Build the gtsdb client package."""

from setuptools import setup, find_packages

setup(
    name="gtsdb",
    version="0.1.0",
    description="Client for a line-protocol time-series database",
    package_dir={"": "python"},
    packages=find_packages("python"),
    python_requires=">=3.9",
    install_requires=["numpy"],
    extras_require={"test": ["pytest"]},
)
