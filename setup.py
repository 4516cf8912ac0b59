from setuptools import setup

setup(
    name='baggingforest',
    version='1.0',
    py_modules=[
        'baselines',
        'bootstrap',
        'dataset',
        'ensemble',
        'errors',
        'importance',
        'metrics',
        'random_source',
        'tree_builder',
    ],
    python_requires='>=3.9',
    install_requires=[
        'numpy>=1.22',
        'pandas>=1.4',
    ],
    extras_require={
        'test': ['pytest>=7'],
    },
    description='Bagging and random forest classification from first principles',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
)
