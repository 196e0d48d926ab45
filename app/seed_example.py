from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import Base, Department, Role, User

DEPARTMENTS = [
    ('IT', 'Information Technology', 'Computers, software and networks'),
    ('LOG', 'Logistics', 'Transport and warehousing'),
    ('RH', 'Human Resources', 'Hiring and training'),
    ('FIN', 'Finance', 'Accounting and treasury'),
    ('COM', 'Sales', 'Sales and marketing'),
    ('ADM', 'Administration', 'General services'),
]

USERS = [
    ('Requester Example', 'user@example.com', Role.USER, 'IT'),
    ('Purchasing Example', 'purchasing@example.com', Role.PURCHASING, 'LOG'),
    ('Director Example', 'director@example.com', Role.DIRECTOR, 'ADM'),
    ('Accountant Example', 'accountant@example.com', Role.ACCOUNTANT, 'FIN'),
]


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        departments: dict[str, Department] = {}
        for code, name, description in DEPARTMENTS:
            department = db.execute(select(Department).where(Department.code == code)).scalar_one_or_none()
            if not department:
                department = Department(code=code, name=name, description=description, active=True)
                db.add(department)
                db.flush()
            departments[code] = department

        for name, email, role, department_code in USERS:
            user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
            if not user:
                db.add(
                    User(
                        name=name,
                        email=email,
                        role=role,
                        department_id=departments[department_code].id,
                        active=True,
                    )
                )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed complete')
