"""
Setup script for sectiondocs.

This script configures the package for installation via pip.
Supports both development and production installations.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

# Read requirements
with open(this_directory / "requirements.txt") as f:
    requirements = [line.strip() for line in f.read().splitlines() if line.strip() and not line.startswith("#")]

setup(
    name="sectiondocs",
    version="0.1.0",
    description="Sectioned document intake: PDF normalisation, page rasters, image extraction and remote summaries",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="sectiondocs contributors",
    author_email="",
    packages=find_packages(include=["sectiondocs", "sectiondocs.*"]),
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sectiondocs=sectiondocs.cli:cli",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Office/Business",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Operating System :: OS Independent",
        "Framework :: FastAPI",
        "Environment :: Console",
    ],
    keywords="pdf docx rasterize images summarization sections upload",
    include_package_data=True,
    zip_safe=False,
)
