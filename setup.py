#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from setuptools import setup, find_packages
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, 'README.rst'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='docsign',
    version='1.0.0',
    description='PDF signing engine: incremental-update CMS signatures with RFC 3161 timestamps.',
    long_description=long_description,
    long_description_content_type='text/x-rst',
    license='MIT',
    classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Operating System :: OS Independent',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Topic :: Security :: Cryptography',
        'Topic :: Office/Business',
    ],
    keywords='cryptography pki x509 pdf pkcs11 pkcs12 cms rfc3161 timestamp signature',
    packages=find_packages(exclude=['examples', 'tests']),
    package_data={'docsign': ['data/*.p12']},
    include_package_data=True,
    platforms=["all"],
    python_requires='>=3.9',
    install_requires=['cryptography>=42', 'asn1crypto', 'pykcs11', 'requests', 'attrs', 'certifi', 'pypdf>=3'],
    test_suite="tests",
)
