#!/usr/bin/env python
# -*- coding: utf-8 -*-

from setuptools import setup, find_packages
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))


def strip_envmark(requires):
    # Strip out environment markers options
    return [req.split(";")[0].rstrip() for req in requires]


# Get the long description from the README file
with open(path.join(here, "README.rst"), encoding="utf-8") as f:
    long_description = f.read()

with open(path.join(here, "requirements.txt")) as f:
    requirements = strip_envmark(f.readlines())

with open(path.join(here, "test-requirements.txt")) as f:
    test_requirements = strip_envmark(f.readlines())

setup(
    name="slotqueue",
    version="0.1.0",
    description="FIFO task queue with a fixed number of worker slots.",
    long_description=long_description,
    license="MIT",
    packages=find_packages(exclude=["docs", "tests", "tests.*"]),
    scripts=[],
    entry_points={
        "console_scripts": [
            "slotqueue = slotqueue.cli:entry",
        ]
    },
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={"test": test_requirements},
    tests_require=test_requirements,
    test_suite="tests",
)
