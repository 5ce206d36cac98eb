from setuptools import setup, find_packages

setup(
    name="carecoord",
    version="0.1.0",
    packages=find_packages(include=["carecoord", "carecoord.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "alembic",
        "psycopg2-binary",
        "python-jose[cryptography]",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "celery",
        "kombu",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "firebase-admin",
        "boto3",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
