"""Record types for users and their pictures."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Picture:
    """A picture attached to a user."""
    id: int
    user_id: int
    filename: str
    byte_size: int
    blob_key: str
    content_type: Optional[str] = None
    position: int = 0
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a public dictionary (blob keys stay internal)."""
        return {
            "id": self.id,
            "filename": self.filename,
            "content_type": self.content_type,
            "byte_size": self.byte_size,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Picture":
        """Create from a database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            filename=row["filename"],
            byte_size=row["byte_size"],
            blob_key=row["blob_key"],
            content_type=row.get("content_type"),
            position=row.get("position", 0),
            created_at=row.get("created_at"),
        )


@dataclass
class User:
    """A user and its pictures."""
    id: int
    name: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    pictures: List[Picture] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "pictures": [picture.to_dict() for picture in self.pictures],
        }

    @classmethod
    def from_row(
        cls, row: Dict[str, Any], pictures: Optional[List[Dict[str, Any]]] = None
    ) -> "User":
        """Create from a user row and its picture rows."""
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            pictures=[Picture.from_row(item) for item in pictures or []],
        )
