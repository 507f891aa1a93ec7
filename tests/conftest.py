import pytest

from rnpatch.core.signer import Signer


@pytest.fixture(scope="session")
def signer():
    """整个测试会话共用一个签名密钥"""
    return Signer.generate("rnpatch-test")
