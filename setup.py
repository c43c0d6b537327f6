import re

from setuptools import setup, find_packages

# Version from targetflow/version.py; importing the package needs its dependencies
with open("targetflow/version.py") as f:
    __version__ = re.search(r'^__version__ = "([^"]+)"', f.read(), re.M).group(1)

setup(
    name="targetflow",
    version=__version__,
    packages=find_packages(include=["targetflow", "targetflow.*"]),
    install_requires=[
        "lark>=1.1.5",
        "typer>=0.9.0",
        "pydantic>=2.0.0",
        "canonicaljson>=2.0.0",
        "dask>=2023.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "targetflow=targetflow.main:app",
        ],
    },
    python_requires=">=3.9",
)
