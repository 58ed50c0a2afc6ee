"""Setup script for the mortuary custody service following Cosmic Python pattern."""

from setuptools import setup, find_namespace_packages

setup(
    name="mortuary-custody",
    version="1.0.0",
    description="Mortuary custody core - case lifecycle, wristband verification and tray allocation",
    author="Mortuary Custody Team",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["mortuary*", "shared*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn[standard]",
        "pydantic",
        "sqlalchemy>=2.0,<2.1",
        "psycopg2-binary",
        "redis",
        "requests",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "httpx",
            "fakeredis",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "mortuary-api=mortuary.entrypoints.mortuary_api:main",
            "mortuary-alert-monitor=mortuary.entrypoints.alert_monitor:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
