from setuptools import find_packages, setup

package_name = "dvo_tracking"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    package_data={package_name: ["config/*.yaml"]},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=["setuptools", "numpy", "scipy", "jax", "pydantic>=2", "pyyaml"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    description="Dense RGB-D visual odometry: coarse-to-fine robust direct alignment on SE(3)",
    license="Apache-2.0",
)
