"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/cmbuild/cmbuild"
KEYWORDS = "embedded arm cortex-m stellaris tiva linker compiler toolchain firmware microcontroller"
HERE = os.path.dirname(os.path.abspath(__file__))


if __name__ == "__main__":
    setup(
        name="cmbuild",
        version="0.1.0",
        description="Incremental build, link and flash pipeline for ARM Cortex-M firmware",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.10",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=[
            "psutil",
            "tqdm",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "cmb=cmbuild.cli:main",
            ],
        },
        include_package_data=True)
