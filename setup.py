"""Setup script for the tagcache package."""

from setuptools import find_packages, setup

with open("README.md", "r") as f:
    long_description = f.read()

setup(
    name="tagcache",
    version="0.1.0",
    description="Tag-aware asynchronous cache backends for MongoDB and Redis.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "pydantic>=2.0",
        "motor",
        "pymongo",
        "redis[hiredis]>=5.0.1",  # Redis client with C parser for performance
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
            "fakeredis>=2.20",  # In-process Redis for the test suite
            "black",  # Code formatter
            "isort",  # Import sorting
            "flake8",  # Linting
            "mypy",  # Type checking
            "pytest-cov",  # Coverage reporting
        ],
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
            "fakeredis>=2.20",  # In-process Redis for the test suite
            "pytest-cov",  # Coverage reporting
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.8",
)
