"""
키 쌍 생성 모듈
실제 키 알고리즘은 wg(8) 에 위임한다
"""

import subprocess
from typing import List, Optional

from .errors import KeyGenerationError
from .logger import get_logger
from .models import KeyPair


class WgKeyPairProvider:
    """`wg genkey` / `wg pubkey` 기반 키 생성기"""

    def __init__(self, wg_binary: str = "wg", timeout: int = 10):
        self.wg_binary = wg_binary
        self.timeout = timeout
        self.logger = get_logger()

    def _run(self, args: List[str], stdin: Optional[str] = None) -> str:
        cmd = [self.wg_binary] + args
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise KeyGenerationError(f"{self.wg_binary} 명령을 찾을 수 없습니다 (wireguard-tools 설치 필요)")
        except subprocess.TimeoutExpired:
            raise KeyGenerationError(f"{' '.join(cmd)} 타임아웃")

        if result.returncode != 0:
            raise KeyGenerationError(f"{' '.join(cmd)} 실패: {result.stderr.strip()}")
        return result.stdout.strip()

    def generate(self) -> KeyPair:
        """새 키 쌍 생성"""
        private_key = self._run(["genkey"])
        public_key = self.public_key(private_key)
        self.logger.debug(f"Generated key pair (public: {public_key[:16]}...)")
        return KeyPair(private_key=private_key, public_key=public_key)

    def public_key(self, private_key: str) -> str:
        """개인키에서 공개키 유도 (pubkey 는 stdin 으로 개인키를 읽는다)"""
        return self._run(["pubkey"], stdin=private_key + "\n")
