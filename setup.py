"""
Setup script for package installation
"""
from setuptools import setup, find_packages

setup(
    name="subscriber_sync",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "SQLAlchemy>=2.0",
        "psycopg2-binary>=2.9",
        "alembic>=1.12",
        "stripe>=8.0,<12",
        "httpx>=0.25",
        "pydantic>=2.0",
        "python-dotenv>=1.0",
        "APScheduler>=3.10,<4",
        "cryptography>=41.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
)
