from setuptools import setup, find_packages


def scm_version():
    def local_scheme(version):
        return version.format_choice("+{node}", "+{node}.dirty")
    return {
        "root": ".",
        "relative_to": __file__,
        "version_scheme": "guess-next-dev",
        "local_scheme": local_scheme,
        "fallback_version": "0.0",
    }


setup(
    name="discferret",
    use_scm_version=scm_version(),
    description="Host library and tools for the DiscFerret floppy disc acquisition board",
    license="0-clause BSD License",
    python_requires="~=3.10",
    setup_requires=[
        "setuptools",
        "setuptools_scm"
    ],
    install_requires=[
        "libusb1>=1.8.1",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    entry_points={
        "console_scripts": [
            "discferret = discferret.cli:run_main"
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved', # ' :: 0-clause BSD License', (not in PyPI)
        'Topic :: System :: Hardware',
        'Topic :: System :: Archiving',
    ],
)
