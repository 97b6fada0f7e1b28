#!/usr/bin/python3.8
# contact: arzwa@psb.vib-ugent.be
# https://stackoverflow.com/questions/43658870/requirements-txt-vs-setup-py

from setuptools import setup

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='pairwise-kaks',
    version='1.0.0',
    packages=['kaks'],
    license='GPL',
    author='Arthur Zwanepoel',
    author_email='arzwa@psb.vib-ugent.be',
    description='pairwise Ka/Ks estimation for coding sequences',
    long_description=long_description,
    long_description_content_type='text/markdown',
    py_modules=['cli'],
    include_package_data=True,
    install_requires=[
        'biopython',
        'click',
        'numpy',
        'pandas',
        'rich',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points='''
        [console_scripts]
        pairwise_kaks=cli:cli
    ''',
)
