"""
初始化数据脚本
创建数据库表与默认员工账号

默认账号（密码均为 123456）：
  admin       管理员     全部权限
  manager     经理       住宿、付款、账本录入
  front1      前台       只读
"""
import sys
sys.path.insert(0, '.')

from villa.database import SessionLocal, init_db
from villa.models.ontology import Employee, EmployeeRole
from villa.security.auth import get_password_hash

DEFAULT_EMPLOYEES = [
    {'username': 'admin', 'name': 'Villa Admin', 'role': EmployeeRole.ADMIN},
    {'username': 'manager', 'name': 'Priya Desai', 'role': EmployeeRole.MANAGER},
    {'username': 'front1', 'name': 'Rohan Shetty', 'role': EmployeeRole.STAFF},
]


def init_employees(db, password: str = '123456') -> list:
    """创建缺失的默认员工，返回新建的用户名"""
    created = []
    for emp_data in DEFAULT_EMPLOYEES:
        existing = db.query(Employee).filter(Employee.username == emp_data['username']).first()
        if not existing:
            db.add(Employee(
                username=emp_data['username'],
                password_hash=get_password_hash(password),
                name=emp_data['name'],
                role=emp_data['role'],
                is_active=True,
            ))
            created.append(emp_data['username'])

    db.commit()
    return created


def main():
    print("=" * 50)
    print("Villa 预订引擎初始化数据")
    print("=" * 50)

    init_db()
    print("数据库表创建完成")

    db = SessionLocal()
    try:
        created = init_employees(db)
        print(f"员工初始化完成: {created if created else '已存在'}")
        print()
        print("默认账号（密码均为 123456）：")
        for emp_data in DEFAULT_EMPLOYEES:
            print(f"  {emp_data['role'].value:<8} {emp_data['username']}")
        print("=" * 50)
    finally:
        db.close()


if __name__ == "__main__":
    main()
