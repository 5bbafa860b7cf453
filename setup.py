#!/usr/bin/env python3
"""
Setup script for the datalineage-engine package
"""

from setuptools import setup, find_packages

setup(
    name="datalineage-engine",
    version="0.1.0",
    package_dir={"": "backend"},
    packages=find_packages("backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        # 🌐 HTTP
        "httpx>=0.25.2",

        # 📋 Data Validation & Settings
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "python-dotenv>=1.0.0",

        # 🗄️ Caching
        "redis[hiredis]>=5.0.1",

        # 🧠 Graph
        "networkx>=3.1",

        # 📝 Logging
        "python-json-logger==2.0.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    package_data={
        "datalineage": ["py.typed"],
    },
)
