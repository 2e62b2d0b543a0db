from setuptools import setup
import os

version = os.environ.get("PYPI_VERSION_OVERRIDE")
if version is None or version == "":
    version = "0.1.0"

with open('docs/index.md', 'r') as file:
    readme = file.read()

setup(
        name="ortbind",
        author="ortbind contributors",
        keywords="onnx onnxruntime runtime neural network inference ctypes",
        version=version,
        description="Python bindings for the ONNX Runtime C API",
        license="Apache License, Version 2.0 OR MIT",
        long_description=readme,
        long_description_content_type="text/markdown",
        classifiers=[
            "Programming Language :: Python :: 3",
            "Programming Language :: Python :: 3.8",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.12",
            "Topic :: Scientific/Engineering :: Mathematics",
            "Topic :: Scientific/Engineering :: Artificial Intelligence",
            "License :: OSI Approved :: Apache Software License",
            "License :: OSI Approved :: MIT License"
            ],
        packages=["ortbind"],
        zip_safe=False,
        python_requires=">=3.8",
        install_requires=[ "numpy" ],
        extras_require={ "test": ["pytest", "onnx"] },
)
