from setuptools import find_namespace_packages, setup

setup(
    name="synlauncher",
    version="0.1.0",
    description="Synastria client, patch and addon acquisition and synchronization",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["synlauncher*"]),
    python_requires=">=3.10",
    install_requires=[
        "aiofiles",
        "aiohttp",
        "platformdirs",
        "PyYAML",
        "requests",
        "rich",
        "urllib3",
    ],
    extras_require={
        "swarm": [
            "libtorrent",
        ],
        "test": [
            "pytest<9.1",
            "pytest-asyncio",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "synlauncher=synlauncher.cli:main",
        ],
    },
)
