# setup.py
"""Setup script for the FHIR definition code generator."""

from setuptools import setup, find_packages

setup(
    name="fhir-codegen",
    version="1.0.0",
    packages=find_packages(include=["fhirgen", "fhirgen.*", "languages", "languages.*", "cli", "cli.*"]),
    include_package_data=True,
    package_data={
        "fhirgen": ["resolver/*.yaml", "converter/maps/*.yaml"],
        "languages": ["*/templates/*.j2", "*/manifest.yaml"],
    },
    install_requires=[
        "click>=8.0",
        "pyyaml>=6.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog>=23.0",
        "jinja2>=3.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "black>=23.0",
            "flake8>=6.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "fhirgen=cli.main:cli",
        ],
    },
    python_requires=">=3.9",
)
