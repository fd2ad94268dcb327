"""A setuptools module for the occlusion-heatmap library.

See:
https://packaging.python.org/en/latest/distributing.html
"""

# Always prefer setuptools over distutils
from setuptools import setup, find_packages
# To use a consistent encoding
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='occlusion-heatmap',

    # Versions should comply with PEP440.
    version='0.1.0',

    description='Occlusion sensitivity heatmaps and outlines for image '
                'classifiers',
    long_description=long_description,
    long_description_content_type='text/markdown',

    # Author details
    author='The occlusion-heatmap authors',

    license='Apache 2.0',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Programming Language :: Python :: 3',
    ],

    keywords='occlusion sensitivity saliency heatmap image classification',

    packages=find_packages(),

    python_requires='>=3.9',

    # List run-time dependencies here.  These will be installed by pip when
    # your project is installed.
    install_requires=['numpy', 'scipy', 'scikit-image', 'Pillow'],

    # $ pip install -e .[test]
    extras_require={
        'test': ['pytest'],
    }
)
