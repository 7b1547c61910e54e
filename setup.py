"""
TradeBridge
Multi-broker trade execution and market data layer
"""

from setuptools import setup, find_packages

setup(
    name="tradebridge",
    version="0.1.0",
    description="Broker execution and market data layer with symbol resolution, caching and indicators",
    author="Christopher Edeson",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
            "isort>=5.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tradebridge=tradebridge.cli:main",
        ]
    },
)
