"""
Setup script for the application-assistant project.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="application-assistant",
    version="0.1.0",
    packages=find_packages(include=["assistant", "assistant.*"]),
    py_modules=["version"],
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0",
        "tenacity>=8.2",
        "langchain-core>=0.3",
        "langchain-openai>=0.2",
        "python-dotenv>=1.0",
        "pymongo>=4.6",
        "beautifulsoup4>=4.12",
        "playwright>=1.40",
        "numpy>=1.26",
        "json-repair>=0.25",
        "firecrawl-py>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "application-assistant=assistant.cli:main",
        ],
    },
)
