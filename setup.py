import pathlib

from setuptools import find_packages, setup

CWD = pathlib.Path(__file__).parent

README = (CWD / 'README.rst').read_text()

INSTALL_REQUIRES = [
    'anndata',
    'numpy',
    'pandas',
    'psutil',
    'scikit-learn',
    'scipy',
    'threadpoolctl',
    'umap-learn',
]

TESTS_REQUIRE = [
    'pytest',
]

DEVELOP_REQUIRES = [
    'autopep8',
    'isort',
    'mypy',
    'pylint',
    'sphinx',
    'sphinx_rtd_theme'
]

setup(
    name='scmetrics',
    version='0.1.0',
    description='Single-cell RNA Sequencing Quality Control and Aggregation',
    long_description=README,
    long_description_content_type='text/x-rst',
    license='MIT',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.7',
        'Topic :: Software Development :: Libraries',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
    ],
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.7',
    install_requires=INSTALL_REQUIRES,
    tests_require=TESTS_REQUIRE,
    extras_require={
        'tests': TESTS_REQUIRE,
        'develop': INSTALL_REQUIRES + TESTS_REQUIRE + DEVELOP_REQUIRES,
    },
)
