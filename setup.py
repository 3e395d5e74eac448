from setuptools import find_packages, setup

setup(
    name='edlhost',
    version='0.3.0',
    description='Host-side client for the Qualcomm EDL Sahara protocol over USB',
    author='isantolin',
    author_email='',
    packages=find_packages(include=['edlhost', 'edlhost.*']),
    python_requires='>=3.12',
    install_requires=[
        'construct',
        'marshmallow',
        'msgspec',
        'pyusb',
        'tenacity',
        'transitions',
        'uvloop',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'hypothesis',
        ],
    },
    entry_points={
        'console_scripts': [
            'edlhost=edlhost.cli:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
