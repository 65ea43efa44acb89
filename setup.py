from setuptools import setup, find_packages

setup(
    name="jupytree",
    version="0.1.0",
    description="A client for the contents of Jupyter notebook servers",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "anyio >=4.0",
        "httpx >=0.25",
        "pydantic >=2,<3",
        "structlog",
        "rich",
        "rich-click",
        "typing_extensions; python_version < '3.11'",
    ],
    extras_require={
        "test": [
            "click",
            "pytest",
            "mypy",
            "ruff",
        ],
    },
    entry_points={"console_scripts": ["jupytree = jupytree.cli:main"]},
    classifiers=(
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ),
)
