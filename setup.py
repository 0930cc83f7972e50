from setuptools import setup, find_packages

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name='statpeaks',
    version='0.1.0',
    description='Cluster labeling, random field theory corrected thresholds and peak tables for statistical maps',
    long_description_content_type='text/markdown',
    packages=find_packages(include=['statpeaks', 'statpeaks.*']),
    install_requires=requirements,
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.9',
)
