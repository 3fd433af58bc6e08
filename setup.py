from setuptools import setup, find_packages

setup(
    name="windowguard",
    version="0.1.0",
    packages=find_packages(include=["windowguard", "windowguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "redis>=5.0.1",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "fakeredis[lua]>=2.20",
        ],
    },
)
