from setuptools import setup, find_packages

setup(
    name="cortex-memory",
    version="0.1.0",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.9",
    install_requires=[
        "requests",
        "pyyaml",
        # Dependency graph traversal
        "networkx>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "cortex=cortex_memory.cli:main",
        ],
    },
    description="Persistent project memory and background analysis for coding-agent sessions.",
)
