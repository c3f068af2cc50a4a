from setuptools import setup

config = {
    'description': 'Differentiable cost functions for lazily evaluated computation graphs',
    'version': '0.1.0',
    'install_requires': ['numpy', 'scipy>=1.8'],
    'extras_require': {'test': ['pytest']},
    'python_requires': '>=3.8',
    'packages': ['costnet'],
    'scripts': [],
    'name': 'Costnet'
}

setup(**config)
