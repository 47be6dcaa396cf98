#!/usr/bin/env python

# Todo list to prepare a release:
#  - run: pytest --doctest-modules guifuzz tests
#  - edit guifuzz/version.py: check/set version
#  - edit ChangeLog: set release date
#  - git commit and git tag guifuzz-x.y
#  - ./setup.py sdist
#
# After the release:
#  - edit guifuzz/version.py: set version to n+1
#  - edit ChangeLog: add a new empty section for version n+1

from glob import glob
from importlib.util import module_from_spec, spec_from_file_location
from os import path

from setuptools import setup

CLASSIFIERS = [
    'Intended Audience :: Developers',
    'Development Status :: 3 - Alpha',
    'Environment :: Console',
    'License :: OSI Approved :: GNU General Public License (GPL)',
    'Operating System :: POSIX :: Linux',
    'Natural Language :: English',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Software Development :: Testing',
]

MODULES = (
    "guifuzz",
    "guifuzz.process",
)

SCRIPTS = glob("fuzzers/guifuzz*")


def load_version():
    spec = spec_from_file_location("version", path.join("guifuzz", "version.py"))
    module = module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def main():
    guifuzz = load_version()
    PACKAGES = {}
    for name in MODULES:
        PACKAGES[name] = name.replace(".", "/")

    with open('README.rst') as fp:
        long_description = fp.read()
    with open('ChangeLog') as fp:
        long_description += fp.read()

    install_options = {
        "name": guifuzz.PACKAGE,
        "version": guifuzz.VERSION,
        "url": guifuzz.WEBSITE,
        "download_url": guifuzz.WEBSITE,
        "description": "Coverage guided fuzzer for GUI applications",
        "long_description": long_description,
        "classifiers": CLASSIFIERS,
        "license": guifuzz.LICENSE,
        "packages": list(PACKAGES.keys()),
        "package_dir": PACKAGES,
        "scripts": SCRIPTS,
        "python_requires": ">=3.9",
        "install_requires": ["python-ptrace>=0.7"],
        "extras_require": {"test": ["pytest"]},
    }
    setup(**install_options)


if __name__ == "__main__":
    main()
