"""Setup script for datasetflow."""

from setuptools import find_packages, setup

setup(
    name="datasetflow",
    version="0.1.0",
    description="Multi-tenant dataset query and transformation engine",
    author="datasetflow Team",
    packages=find_packages(include=["datasetflow", "datasetflow.*"]),
    install_requires=[
        "duckdb>=1.2.0",  # Core SQL engine
        "pandas>=2.0.0",  # In-memory transformations
        "pyarrow>=10.0.0",  # Result materialisation and type mapping
        "networkx>=3.0",  # Transformation chain graph
        "typer>=0.9.0",  # CLI framework
        "rich>=13.0.0",  # CLI output
        "sqlalchemy>=2.0",  # PostgreSQL / Redshift engine
        "psycopg2-binary>=2.9.0",  # PostgreSQL driver
        "boto3>=1.26.0",  # AWS S3 connector
        "pyyaml>=6.0",  # Settings and dataset catalogs
    ],
    package_data={
        "datasetflow": ["py.typed"],
    },
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "black>=22.1.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "mypy>=1.0.0",  # Type checking
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "datasetflow=datasetflow.cli.main:app",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
