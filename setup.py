from setuptools import setup

setup(
    name="bfbridge",
    version="1.0.0",
    packages=["bfbridge", "bfbridge.cli", "bfbridge.lib"],
    install_requires=[
        "Click",
        "PyYAML",
        "colorama",
        "paramiko",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "bfbridge = bfbridge.cli.cli:cli",
        ],
    },
)
