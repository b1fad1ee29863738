# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

from setuptools import setup

setup(
    name='defercommit',
    version='0.1.0',
    packages=['defercommit', 'defercommit.core', 'defercommit.impl',
        'defercommit.cli'],
    package_dir={
        'defercommit': 'src',
        'defercommit.core': 'src/core',
        'defercommit.impl': 'src/impl',
        'defercommit.cli': 'src/cli',
    },
    entry_points={
        'console_scripts': [
            'defercommit=defercommit.cli.main:cli',
        ],
    },
    python_requires='>=3.11',
    install_requires=[
        "jsonschema",
        "PyNaCl",
        "click",
    ],
    extras_require={
        'test': [
            "pytest",
        ],
    },
)
