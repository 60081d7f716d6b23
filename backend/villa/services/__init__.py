# Business Services
