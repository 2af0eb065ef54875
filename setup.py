#!/usr/bin/env python

# Setup script for the `luks-container-manager' package.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Setup script for the `luks-container-manager` package.

**python setup.py install**
  Install from the working directory into the current Python environment.

**python setup.py sdist**
  Build a source distribution archive.

**python setup.py bdist_wheel**
  Build a wheel distribution archive.
"""

# Standard library modules.
import codecs
import os
import re

# De-facto standard solution for Python packaging.
from setuptools import find_packages, setup


def get_contents(*args):
    """Get the contents of a file relative to the source distribution directory."""
    with codecs.open(get_absolute_path(*args), 'r', 'UTF-8') as handle:
        return handle.read()


def get_version(*args):
    """Extract the version number from a Python module."""
    contents = get_contents(*args)
    metadata = dict(re.findall('__([a-z]+)__ = [\'"]([^\'"]+)', contents))
    return metadata['version']


def get_requirements(*args):
    """Get requirements from pip requirement files."""
    requirements = set()
    with open(get_absolute_path(*args)) as handle:
        for line in handle:
            # Strip comments.
            line = re.sub(r'^#.*|\s#.*', '', line)
            # Ignore empty lines
            if line and not line.isspace():
                requirements.add(re.sub(r'\s+', '', line))
    return sorted(requirements)


def get_absolute_path(*args):
    """Transform relative pathnames into absolute pathnames."""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), *args)


setup(name='luks-container-manager',
      version=get_version('luks_container_manager', '__init__.py'),
      description="Create, mount and unmount LUKS encrypted container files.",
      long_description=get_contents('README.rst'),
      author="The luks-container-manager authors",
      packages=find_packages(),
      entry_points=dict(console_scripts=[
          'luks-container-create = luks_container_manager.cli:create_main',
          'luks-container-mount = luks_container_manager.cli:mount_main',
          'luks-container-unmount = luks_container_manager.cli:unmount_main',
      ]),
      install_requires=get_requirements('requirements.txt'),
      extras_require=dict(tests=get_requirements('requirements-tests.txt')),
      python_requires='>=3.6',
      classifiers=[
          'Development Status :: 4 - Beta',
          'Environment :: Console',
          'Intended Audience :: Information Technology',
          'Intended Audience :: System Administrators',
          'License :: OSI Approved :: MIT License',
          'Operating System :: POSIX :: Linux',
          'Programming Language :: Python',
          'Programming Language :: Python :: 3',
          'Topic :: Security :: Cryptography',
          'Topic :: System :: Filesystems',
          'Topic :: System :: Systems Administration',
          'Topic :: Terminals',
          'Topic :: Utilities',
      ])
