from setuptools import setup, find_packages

setup(
    name="longmem",
    version="0.1.0",
    description="Long-term agent memory with hybrid vector and keyword retrieval",
    author="longmem developers",
    python_requires=">=3.11",
    packages=find_packages(include=["longmem", "longmem.*"]),
    install_requires=[
        "aiosqlite>=0.19.0",
        "pydantic>=2.5.0",
        "chromadb>=0.4.0",
        "httpx>=0.25.0",
        "numpy>=1.24.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
)
