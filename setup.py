"""
Packaging for the Pathfinder scale connector.

Tests live beside the modules they test, as *_test.py. Run them with `pytest`.
"""

from setuptools import setup

setup(
    name='pathfinder-connector-py',
    version='0.0.1',
    description='Serial session management for the Avery Pathfinder 6140 scale: readings and calibration.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['pathfinder', 'pathfinder.conduit', 'pathfinder.config', 'pathfinder.protocol',
              'pathfinder.support'],
    package_data={'pathfinder': ['*.cfg']},
    install_requires=[
        'pyserial>=3.5',
        'configobj>=5.0.8',
    ],
    extras_require={
        'test': ['pytest', 'PyHamcrest', 'timeout-decorator'],
    },
    entry_points={
        'console_scripts': ['pathfinder-console = pathfinder.console:main'],
    },
    zip_safe=False,
)
