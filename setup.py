from setuptools import setup, find_packages

setup(
    name="quorum-e2e",
    version="0.1.0",
    description="Network-fault and convergence E2E harness for quorum clusters",
    packages=find_packages(include=["quorum_e2e", "quorum_e2e.*"]),
    install_requires=[
        "aiohttp>=3.8.0",
        "pyyaml>=6.0",
        "pytest>=7.0.0",
        "pytest-asyncio>=0.21.0",
    ],
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "quorum-e2e=quorum_e2e.main:cli",
        ],
    },
)
