#!/usr/bin/env python
# -*- coding: utf-8 -*-

import os
import re

from setuptools import setup


def get_version(package):
    """
    Return package version as listed in `__version__` in `init.py`.
    """
    init_py = open(os.path.join(package, "__init__.py")).read()
    return re.search("__version__ = ['\"]([^'\"]+)['\"]", init_py).group(1)


def get_long_description():
    """
    Return the README.
    """
    return open("README.md", "r", encoding="utf8").read()


def get_packages(package):
    """
    Return root package and all sub-packages.
    """
    return [
        dirpath
        for dirpath, dirnames, filenames in os.walk(package)
        if os.path.exists(os.path.join(dirpath, "__init__.py"))
    ]


setup(
    name="slowpipe",
    version=get_version("slowpipe"),
    license="BSD",
    description="Reproduce broken pipes caused by reverse proxy timeouts",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    packages=get_packages("slowpipe"),
    python_requires=">=3.9",
    install_requires=[
        "anyio>=4.0",
        "starlette>=0.37",
        "uvicorn>=0.29",
        "httpx>=0.27",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=8",
            "asgi-lifespan>=2.1",
        ],
    },
    entry_points={"console_scripts": ["slowpipe=slowpipe.__main__:main"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Topic :: Internet :: WWW/HTTP",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
    ],
)
