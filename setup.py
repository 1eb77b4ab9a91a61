from setuptools import setup

setup(
    name="obstacles_detection",
    version="0.1.0",
    description="Ground/obstacle segmentation of depth and stereo point clouds in the robot frame",
    packages=["obstacles_detection"],
    scripts=["scripts/obstacles_detection_node.py"],
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "scipy",
        "scikit-learn",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
