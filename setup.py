#!/usr/bin/env python3
from setuptools import setup, find_packages

setup(
    name="rest-dataset-sync",
    version="1.0.0",
    description="Synchronize any paginated REST/JSON API into a tabular dataset with explicit or inferred schemas, schema reconciliation across runs, and flexible authentication (API key, Bearer, Basic, OAuth2, session)",
    author="Singer Community",
    classifiers=["Programming Language :: Python :: 3 :: Only"],
    install_requires=[
        "singer-python==6.0.1",
        "requests==2.31.0",
        "backoff==2.2.1",
        "python-dateutil==2.8.2",
        "jsonpath-ng==1.6.1",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pylint",
            "responses",
        ]
    },
    entry_points={
        "console_scripts": [
            "rest-dataset-sync=rest_dataset_sync:main",
        ]
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
)
