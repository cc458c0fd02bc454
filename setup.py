#!/usr/bin/env python3

from setuptools import setup
import os


directory = os.path.dirname(os.path.realpath(__file__))


if __name__ == "__main__":
    setup(
        name="navgen",
        packages=["navgen", "navgen.loaders"],
        python_requires='>3.10.0',
        version="0.1.0",
        license="MIT",
        description="Navigation mesh generation from triangle geometry",
        author="mirmik",
        author_email="mirmikns@yandex.ru",
        long_description=open(os.path.join(
            directory, "README.md"), "r", encoding="utf8").read(),
        long_description_content_type="text/markdown",
        keywords=["navmesh", "pathfinding", "voxelization"],
        classifiers=[],
        include_package_data=True,
        install_requires=[
            "numpy",
            "scipy",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "navgen=navgen.__main__:main",
            ],
        },
        zip_safe=False,
    )
