#!/usr/bin/env python
""" REST resources for SqlAlchemy models: MongoDB-style queries over HTTP """

from setuptools import setup, find_packages

setup(
    name='restsql',
    version='0.1.0',

    license='BSD',
    description=__doc__,
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    keywords=['sqlalchemy', 'flask', 'rest', 'api'],

    packages=find_packages(exclude=('tests', 'tests.*')),
    scripts=[],
    entry_points={},

    python_requires='>= 3.8',
    install_requires=[
        'sqlalchemy >= 2.0',
        'flask >= 2.2',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-cov',
            'nox',
        ],
    },
    include_package_data=True,

    platforms='any',
    classifiers=[
        # https://pypi.python.org/pypi?%3Aaction=list_classifiers
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Framework :: Flask',
        'Topic :: Internet :: WWW/HTTP :: Dynamic Content',
        'Topic :: Software Development :: Libraries :: Python Modules',
    ],
)
