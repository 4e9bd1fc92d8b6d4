"""
Models for the Dockerfile Abstract Syntax Tree.
"""
from typing import List, Optional
from pydantic import BaseModel

class Instruction(BaseModel):
    """
    Represents a single instruction in a Dockerfile.
    """
    instruction: str
    arguments: List[str]
    raw: str
    line: int = 0

class DockerfileAST(BaseModel):
    """
    Represents the complete Abstract Syntax Tree of a Dockerfile.
    """
    instructions: List[Instruction] = []

    def by_keyword(self, keyword: str) -> List[Instruction]:
        """Returns every instruction with the given keyword, in file order."""
        return [i for i in self.instructions if i.instruction == keyword]

    def first(self, keyword: str) -> Optional[Instruction]:
        matches = self.by_keyword(keyword)
        return matches[0] if matches else None
