"""setuptools packaging for LevelCraft.

Install for development:
    pip install -e ".[test]"
    python -m levelcraft init
"""

from setuptools import setup, find_packages

setup(
    name="levelcraft",
    version="0.1.0",
    description="XP awards, levels and level-gated rewards",
    packages=find_packages(include=["levelcraft", "levelcraft.*"]),
    python_requires=">=3.10",
    install_requires=[
        "SQLAlchemy>=2.0",
        "PyQt6>=6.5",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": ["levelcraft=levelcraft.__main__:main"],
    },
)
