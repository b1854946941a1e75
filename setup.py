from setuptools import setup, find_packages

setup(
    name="lms-assessment-engine",
    version="1.0.0",
    packages=find_packages(include=["lms_backend", "lms_backend.*"]),
    package_data={"lms_backend": ["alembic/versions/*.py"]},
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "asyncpg>=0.28.0",
        "alembic>=1.12.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.24.0",
        ],
    },
    python_requires=">=3.9",
)
