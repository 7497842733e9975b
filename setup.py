import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

with open('VERSION', 'r') as fh:
    VERSION = fh.read().strip()

setuptools.setup(
    name="voidstrap",
    version=VERSION,
    description="Void Linux storage provisioning - encrypted LVM on a YubiKey protected LUKS2 container",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires='>=3.12',
    install_requires=[
        'pydantic>=2',
        'pyparted',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': ['voidstrap=voidstrap:run_as_a_module'],
    },
)
