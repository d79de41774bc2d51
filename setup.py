from setuptools import setup, find_packages
import os
import re

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [
        line.strip() for line in fh if line.strip() and not line.startswith("#")
    ]


def read_version():
    with open(os.path.join("phenozonal", "__init__.py")) as f:
        content = f.read()
    return re.search(r'__version__ = "(.*)"', content).group(1)


setup(
    name="pheno-zonal",
    version=read_version(),
    description="Elevation-zoned vegetation index time series for phenology analysis",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=[
        "phenology",
        "remote sensing",
        "modis",
        "evi",
        "ndvi",
        "elevation",
        "zonal statistics",
        "raster",
        "geospatial",
        "gis",
        "time series",
        "python",
    ],
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: GIS",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={"test": ["pytest>=7.0"]},
    entry_points={"console_scripts": ["phenozonal=phenozonal.cli:main"]},
)
