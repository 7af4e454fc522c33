#!/usr/bin/python3
# Setup file for repocache
# Copyright (C) 2026 The repocache Authors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require = ["pytest"]


setup(
    name="repocache",
    version="0.1.0",
    description="Caching reverse proxy for the git smart HTTP protocol",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="Apache-2.0 OR GPL-2.0-or-later",
    packages=["repocache"],
    python_requires=">=3.9",
    install_requires=[
        "urllib3>=2.0",
        "python-dotenv>=0.19.0",
    ],
    extras_require={"test": tests_require},
    entry_points={
        "console_scripts": [
            "repocache=repocache.cli:_main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control :: Git",
    ],
)
